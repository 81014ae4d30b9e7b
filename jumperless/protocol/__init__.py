"""Parsing and talking to the Jumperless text protocol."""
