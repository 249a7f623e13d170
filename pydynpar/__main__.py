import sys

from pydynpar.demo import main

sys.exit(main())
