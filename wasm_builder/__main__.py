import sys

from wasm_builder.runner import main

sys.exit(main())
