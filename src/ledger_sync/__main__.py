from ledger_sync.server import main

main()
