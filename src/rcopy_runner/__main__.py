"""rcopy-runner 入口点。

支持: python -m rcopy_runner
"""

from .app import main

if __name__ == "__main__":
    main()
