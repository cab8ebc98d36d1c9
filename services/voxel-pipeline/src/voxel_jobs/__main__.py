from __future__ import annotations

from voxel_jobs.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
