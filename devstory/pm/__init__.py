"""
PM (project management) module for devstory.

Work items, developer stories and their persistence, plus the refinement
workflow that turns the former into the latter.
"""
