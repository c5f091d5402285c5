"""
Model loader package for the caption pipeline.

This module exposes:
- the vision classifier singleton (`vision.get_vision_model`)
- text-generation backends (`text_generation`)
- the caption model lifecycle owner (`caption_model.get_caption_model`)
"""
