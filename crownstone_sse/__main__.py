from crownstone_sse.cli import main

main()
