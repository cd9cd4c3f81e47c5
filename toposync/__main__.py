from toposync.cli import main

raise SystemExit(main())
