import os
import sys
import traceback

# Ensure project root is on sys.path so `import what2watch` resolves consistently
ROOT = os.path.dirname(os.path.abspath(__file__))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

try:
    from what2watch import create_app
except Exception:
    print("[run_server] Failed to import what2watch:create_app")
    traceback.print_exc()
    raise

app = create_app()

if __name__ == "__main__":
    host = os.getenv("APP_HOST", "127.0.0.1")
    port = int(os.getenv("APP_PORT", "5000"))
    print(f"[run_server] Starting Flask on {host}:{port}")
    app.run(host=host, port=port, debug=False, use_reloader=False)
