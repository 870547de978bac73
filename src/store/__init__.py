"""Document store layer.

This module writes harvested documents to a CouchDB-style database in
bounded bulk requests and maintains existing documents by id.
"""
