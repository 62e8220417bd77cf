"""Live detection loop: polling face recognition + COCO object detection over a video source."""
