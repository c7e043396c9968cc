"""
WSGI entry point for serverless deployments.

The platform imports ``app``; running the module directly serves it on PORT
for a quick local check.
"""

import os

from damdoh_api.app import create_app

app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "5000")))
