"""
Make `src` a package under `keeper`.

This file is intentionally empty but necessary for Python to treat
`keeper/src` as a package so that modules under it (e.g.
`keeper.src.keeper`) can be imported using the dotted path.
"""
__all__ = []
