"""Request authentication helpers.

Sign-in happens upstream; requests arrive with ``user_id`` in the session.
"""
