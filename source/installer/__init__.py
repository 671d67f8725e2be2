"""OS installer that runs from the initrd of a PXE-booted target VM."""
