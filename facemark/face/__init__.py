"""Face recognition building blocks (provider/extractor/scorer/matcher/gallery).

APIs stay lightweight so the top-level `FaceRecognizer` can wire them together and
the video loop can reuse the same pieces per frame.
"""
