#!/usr/bin/env python3
"""
Launcher for the wordlens OCR demo.

  python run_app.py        # Gradio viewer
  python run_app.py api    # FastAPI JSON service
"""

import os
import socket
import subprocess
import sys


def find_available_port(start_port=7860):
    """Find an available port starting from start_port"""
    for port in range(start_port, start_port + 100):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(("localhost", port))
                return port
        except OSError:
            continue
    return None


def main():
    mode = sys.argv[1] if len(sys.argv) > 1 else "ui"
    port = find_available_port(8000 if mode == "api" else 7860)
    if not port:
        print("❌ Error: No available ports found")
        sys.exit(1)

    env = os.environ.copy()
    if mode == "api":
        cmd = [sys.executable, "-m", "uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", str(port)]
    else:
        env["GRADIO_SERVER_PORT"] = str(port)
        cmd = [sys.executable, "gradio_interface.py"]

    print(f"🌐 Starting {mode} on http://localhost:{port}")
    print("📝 Press Ctrl+C to stop the server")
    try:
        subprocess.run(cmd, env=env, check=True)
    except KeyboardInterrupt:
        print("\n🛑 Server stopped by user")
    except subprocess.CalledProcessError as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
