"""
DjVu publishing pipeline.

publish - incremental page publishing with shared (djbz) dictionaries:
          staleness analysis, stage planning, external encoders, commit
          and the bundled multi-page document.
"""
