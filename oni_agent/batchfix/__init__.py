"""Batch correction.

Reads and rewrites a batch's batch.xml manifest and builds corrected copies
of batches (currently: with issues removed) using a staging directory that is
renamed into place only when the copy is complete.
"""
