from session_collector.cli import main

raise SystemExit(main())
