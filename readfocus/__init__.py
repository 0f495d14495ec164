"""
ReadFocus core package.

This package currently focuses on the highlights subsystem. It resolves a
WeRead session cookie, pulls a user's notebooks and highlighted passages
through a cookie-rotating session client, keeps them in a merge cache and a
full-dataset snapshot, and selects one not-recently-shown passage at a time.
"""
