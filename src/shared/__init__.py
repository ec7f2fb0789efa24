# Shared utilities package
