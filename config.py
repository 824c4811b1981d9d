"""
Configuration constants for the bipartite cell tracker.
All thresholds and configurable parameters are centralized here.
"""

# ==========================================
# Region Extraction
# ==========================================
REGION_CONNECTIVITY = 4                # 4 | 8 neighbourhood for connected components
REGION_BACKGROUND_LABEL = 0            # Background value in label images

# ==========================================
# Frame-to-Frame Tracking
# ==========================================
TRACKING_MAX_DIST = 30.0               # Gating radius (pixels), ignored with auto distance
TRACKING_MAX_AREA_CHANGE = 0.5         # Fractional area change tolerated for a match
TRACKING_AUTO_DISTANCE = True          # Estimate gating radius from the sequence
TRACKING_ASSIGN_SOLVER = "scipy"       # scipy | lapjv
TRACKING_DIVISION_CIRCULARITY = 0.9    # Circularity above which a split is reported as division
TRACKING_MAX_WORKERS = 4               # Worker threads for per-frame-pair precomputation

# ==========================================
# Gating Distance Calibration (Kan et al. 2011)
# ==========================================
CALIBRATION_R_MIN = 1                  # Smallest tested radius
CALIBRATION_R_MAX_DIVISOR = 10         # Largest tested radius = frame width // divisor
CALIBRATION_R_STEP = 1                 # Radius increment
CALIBRATION_MAX_ITERATIONS = None      # Optional cap on tested radii (None = full sweep)

# ==========================================
# Trajectory Extraction
# ==========================================
TRAJECTORY_MIN_TRACK_LENGTH = 24       # Minimum number of points for a kept trajectory
TRAJECTORY_MASK_INCLUDE = True         # Keep (True) or drop (False) tracks bright in the mask channel
TRAJECTORY_MASK_FACTOR = 3.0           # Region mean must reach factor * frame mean

# ==========================================
# Input
# ==========================================
LOADER_IMAGE_EXTENSIONS = (".tif", ".tiff", ".png", ".bmp", ".jpg", ".jpeg")
LOADER_SORT_MODE = "alphabetical"      # alphabetical | numeric | date modified

# ==========================================
# Export
# ==========================================
EXPORT_FORMATS = ("npy", "csv", "json")   # also: "tiff"
EXPORT_DEFAULT_DIR = "tracking_output"
