"""Terminal renderers for stored material."""
