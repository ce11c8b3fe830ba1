"""
Job store access.

Records are owned by the job execution engine; this package only reads them
and deletes expired ones.
"""
