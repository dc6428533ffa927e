"""Alert and report rendering."""
