"""Tests for declaration parsing, for-each expansion and graph construction."""

import pytest
from proxyplane.core.errors import CycleError, DeclarationError, UnresolvedReferenceError
from proxyplane.graph.builder import GraphBuilder
from proxyplane.graph.declarations import DeclarationSet, expand
from proxyplane.graph.expressions import InstanceKey
from proxyplane.graph.loader import load_declarations, read_document

ALICE = InstanceKey("secret", "user", "alice")
BOB = InstanceKey("secret", "user", "bob")
ROLE = InstanceKey("iam_role", "proxy")
PROXY = InstanceKey("db_proxy", "main")


def build(document):
    return GraphBuilder().build(DeclarationSet.from_dict(document))


class TestDeclarationSet:
    def test_rejects_unknown_top_level_section(self):
        with pytest.raises(DeclarationError, match="Unknown top-level"):
            DeclarationSet.from_dict({"resources": {}, "variables": {}})

    def test_rejects_unknown_block_field(self):
        with pytest.raises(DeclarationError, match="unknown fields"):
            DeclarationSet.from_dict({"resources": {"secret": {"a": {"count": 2}}}})

    def test_each_without_for_each(self):
        with pytest.raises(DeclarationError, match="without for_each"):
            DeclarationSet.from_dict(
                {"resources": {"secret": {"a": {"config": {"name": {"$each": "key"}}}}}}
            )

    def test_output_with_description(self):
        decls = DeclarationSet.from_dict(
            {"outputs": {"arn": {"value": {"$ref": "iam_role.proxy.arn"}, "description": "Role"}}}
        )
        assert decls.outputs[0].description == "Role"

    def test_expand_for_each_in_declaration_order(self, document):
        instances = expand(DeclarationSet.from_dict(document))

        assert [instance.key for instance in instances] == [ALICE, BOB, ROLE, PROXY]
        assert [instance.position for instance in instances] == [0, 1, 2, 3]


class TestGraphBuilder:
    def test_scenario_edges(self, document):
        graph = build(document)

        assert graph.dependencies[ALICE] == []
        assert graph.dependencies[ROLE] == [ALICE, BOB]
        assert set(graph.dependencies[PROXY]) == {ROLE, ALICE, BOB}

    def test_topological_order_respects_edges(self, document):
        graph = build(document)

        assert graph.order == [ALICE, BOB, ROLE, PROXY]

    def test_ties_broken_by_declaration_order(self):
        graph = build(
            {
                "resources": {
                    "secret": {
                        "b": {"config": {"name": "b"}},
                        "a": {"config": {"name": "a"}},
                        "c": {"config": {"name": "c"}},
                    }
                }
            }
        )
        assert [key.name for key in graph.order] == ["b", "a", "c"]

    def test_dependencies_declared_later_are_ordered_first(self):
        graph = build(
            {
                "resources": {
                    "db_proxy": {"main": {"config": {"role_arn": {"$ref": "iam_role.proxy.arn"}}}},
                    "iam_role": {"proxy": {"config": {"name": "r"}}},
                }
            }
        )
        assert graph.order == [ROLE, PROXY]

    def test_cycle_detected(self):
        document = {
            "resources": {
                "iam_role": {"a": {"config": {"description": {"$ref": "iam_role.b.arn"}}}},
                "iam_role_policy": {},
            }
        }
        document["resources"]["iam_role"]["b"] = {"config": {"description": {"$ref": "iam_role.a.arn"}}}

        with pytest.raises(CycleError) as exc_info:
            build(document)

        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"iam_role.a", "iam_role.b"}

    def test_cycle_through_explicit_depends_on(self):
        with pytest.raises(CycleError):
            build(
                {
                    "resources": {
                        "secret": {"a": {"depends_on": ["secret.a"], "config": {"name": "a"}}},
                    }
                }
            )

    def test_unresolved_reference(self):
        with pytest.raises(UnresolvedReferenceError, match="iam_role.missing.arn"):
            build({"resources": {"db_proxy": {"main": {"config": {"role_arn": {"$ref": "iam_role.missing.arn"}}}}}})

    def test_reference_to_unknown_attribute(self):
        with pytest.raises(UnresolvedReferenceError, match="not an attribute"):
            build(
                {
                    "resources": {
                        "iam_role": {"proxy": {"config": {"name": "r"}}},
                        "db_proxy": {"main": {"config": {"role_arn": {"$ref": "iam_role.proxy.colour"}}}},
                    }
                }
            )

    def test_reference_to_missing_member(self, make_document):
        document = make_document(users={"alice": "secret-a"})
        document["resources"]["db_proxy"]["main"]["config"]["auth"].append(
            {"secret_arn": {"$ref": 'secret.user["carol"].arn'}}
        )
        with pytest.raises(UnresolvedReferenceError, match="carol"):
            build(document)

    def test_for_each_reference_needs_index(self):
        with pytest.raises(UnresolvedReferenceError, match="needs an index"):
            build(
                {
                    "resources": {
                        "secret": {"user": {"for_each": {"a": "a"}, "config": {"name": {"$each": "value"}}}},
                        "iam_role": {"proxy": {"config": {"description": {"$ref": "secret.user.arn"}}}},
                    }
                }
            )

    def test_unresolved_output_reference(self, document):
        document["outputs"]["missing"] = {"$ref": "db_proxy.other.endpoint"}
        with pytest.raises(UnresolvedReferenceError):
            build(document)

    def test_unknown_kind(self):
        with pytest.raises(DeclarationError, match="unknown kind"):
            build({"resources": {"bucket": {"logs": {"config": {}}}}})

    def test_unknown_input_attribute(self):
        with pytest.raises(DeclarationError, match="unknown attributes: colour"):
            build({"resources": {"secret": {"a": {"config": {"name": "a", "colour": "red"}}}}})

    def test_secret_recovery_window_is_not_an_input(self):
        with pytest.raises(DeclarationError, match="unknown attributes: recovery_window_in_days"):
            build({"resources": {"secret": {"a": {"config": {"name": "a", "recovery_window_in_days": 0}}}}})

    def test_empty_collection_adds_no_edges(self, make_document):
        graph = build(make_document(users={}))

        assert graph.members("secret", "user") == []
        assert graph.dependencies[ROLE] == []
        assert graph.order == [ROLE, PROXY]

    def test_depends_on_declaration_address_covers_all_members(self, document):
        document["resources"]["db_proxy_endpoint"] = {
            "ro": {
                "depends_on": ["secret.user"],
                "config": {"db_proxy_name": "main-proxy", "name": "ro", "vpc_subnet_ids": ["s"]},
            }
        }
        graph = build(document)

        assert graph.dependencies[InstanceKey("db_proxy_endpoint", "ro")] == [ALICE, BOB]


class TestLoader:
    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "decls.yaml"
        path.write_text(
            """
resources:
  secret:
    user:
      for_each: {alice: secret-a}
      config:
        name: {$each: value}
outputs:
  arns: {$all: secret.user.arn}
"""
        )

        decls = load_declarations(path)

        assert decls.resources[0].for_each == {"alice": "secret-a"}
        assert decls.outputs[0].name == "arns"

    def test_missing_file(self, tmp_path):
        with pytest.raises(DeclarationError, match="not found"):
            read_document(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("resources: [unclosed")
        with pytest.raises(DeclarationError, match="Invalid YAML"):
            read_document(path)

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(DeclarationError, match="must contain a mapping"):
            read_document(path)
