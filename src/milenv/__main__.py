from milenv.cli import main

raise SystemExit(main())
