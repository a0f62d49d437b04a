from clubtab.main import main

raise SystemExit(main())
