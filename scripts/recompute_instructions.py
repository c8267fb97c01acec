# scripts/recompute_instructions.py
# Recompute the cached instruction column, e.g. after a bulk import or a rule change.
import os, sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from db import init_db, instruction_counts, refresh_all_instructions


def main():
    init_db()

    changed = refresh_all_instructions()
    print(f"Instructions changed: {changed}")

    by_label = sorted(instruction_counts().items(), key=lambda kv: kv[1], reverse=True)
    for label, cnt in by_label:
        print(f"  {label or '(none)':<30} {cnt}")


if __name__ == "__main__":
    main()
