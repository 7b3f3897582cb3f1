"""Application services assembled from the pipeline components."""
