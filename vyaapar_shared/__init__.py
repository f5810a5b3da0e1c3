"""Models, interfaces, exceptions and logging shared by the Vyaapar client packages."""
