# SPDX-License-Identifier: GPL-3.0-or-later
from takeoutfix.cli import main

raise SystemExit(main())
