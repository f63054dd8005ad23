"""Pure rule policies: trigger matching and condition gating."""
