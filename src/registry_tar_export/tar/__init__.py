"""Legacy docker save archive layout and assembly."""
