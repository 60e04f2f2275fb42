from protobuild.cli import main

main()
