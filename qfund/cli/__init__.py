"""Command-line tools for inspecting and simulating settlement rounds."""
