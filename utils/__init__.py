"""LibTrack - utility helpers

- Input validation for catalog and identity fields (validators.py)
- CLI output rendering in plain, JSON or Rich form (ui_helpers.py)
"""
