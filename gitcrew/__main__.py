from gitcrew.app import main

main()
