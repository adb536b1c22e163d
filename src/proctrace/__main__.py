from proctrace.cli import main

main()
