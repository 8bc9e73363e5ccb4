"""
Exits immediately, leaving a grandchild that writes to stdout after a delay.
"""

import subprocess
import sys

delay = float(sys.argv[1])
subprocess.Popen([
    sys.executable, "-c",
    f"import os, time; time.sleep({delay}); os.write(1, b'late\\n')",
])
sys.exit(int(sys.argv[2]) if len(sys.argv) > 2 else 0)
