from directory_sync.main import main

main()
