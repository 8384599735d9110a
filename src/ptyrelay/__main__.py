from ptyrelay.cli import main

main()
