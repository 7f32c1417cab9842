"""recordhistory Engine - version clock, change detection, snapshots, lifecycle hooks, restore."""
