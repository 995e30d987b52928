from runtests.cli import main


raise SystemExit(main())
