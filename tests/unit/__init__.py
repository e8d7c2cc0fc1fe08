"""Unit tests for boxes, the SQLite engine, codecs and the ambient modules."""
