import sys

from hostmetrics.main import main

sys.exit(main())
