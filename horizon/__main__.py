from horizon.cli import main

raise SystemExit(main())
