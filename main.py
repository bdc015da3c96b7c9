import sys
import uvicorn
from expenseflow.core.config import settings

def run_http(port: int = 8000):
    """Run HTTP server"""
    print(f"🚀 Starting HTTP server on port {port}...")
    uvicorn.run(
        "expenseflow.main:app",  # Use string import
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG
    )

if __name__ == "__main__":
    port = 8000
    if "--port" in sys.argv:
        port = int(sys.argv[sys.argv.index("--port") + 1])
    run_http(port)
