from blowout.main import main

raise SystemExit(main())
