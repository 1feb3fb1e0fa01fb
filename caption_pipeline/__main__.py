"""Package entry point for ``python -m caption_pipeline``.

HOW: Checks sys.argv for the ``--serve`` flag. If present, starts the
FastAPI server with uvicorn. Otherwise, delegates to the CLI's main().
"""

import sys

if __name__ == "__main__":
    if "--serve" in sys.argv:
        from caption_pipeline.server.app import run_api
        run_api()
    else:
        from caption_pipeline.cli import main
        main()
