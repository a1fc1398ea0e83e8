from newsrelay.app import main

main()
