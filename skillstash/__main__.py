from skillstash.cli import main

main()
