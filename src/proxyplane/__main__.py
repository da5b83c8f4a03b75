from proxyplane.main import main

main()
